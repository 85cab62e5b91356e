"""
Adaptive Card templates for the welcome bot.
"""
from typing import Optional

from botbuilder.core import CardFactory
from botbuilder.schema import Attachment


def create_welcome_card(
    base_uri: str,
    bot_name: str = "Welcome Bot",
    email_notifications_url: Optional[str] = None
) -> Attachment:
    """
    Create welcome card sent to members when they join or when the bot is installed.

    Args:
        base_uri: Public base URL serving /Images/*.png
        bot_name: Name shown in the welcome text
        email_notifications_url: Optional link for the Email Notifications shortcut

    Returns:
        Adaptive card attachment for an activity
    """
    base_uri = base_uri.rstrip("/")

    body = [
        {
            "type": "Image",
            "url": f"{base_uri}/Images/WelcomeCard.png"
        },
        {
            "type": "RichTextBlock",
            "inlines": [
                {
                    "type": "TextRun",
                    "text": f"{bot_name} is your official Microsoft Teams Platform assistant!",
                    "weight": "Bolder",
                    "size": "Small"
                },
                {
                    "type": "TextRun",
                    "text": f" Use {bot_name} to:",
                    "size": "Small"
                }
            ]
        }
    ]

    # Shortcut row only makes sense with somewhere to link to
    if email_notifications_url:
        open_url = {
            "type": "Action.OpenUrl",
            "url": email_notifications_url,
            "title": "Email Notifications"
        }
        body.append({
            "type": "ColumnSet",
            "columns": [
                {
                    "type": "Column",
                    "width": "auto",
                    "items": [
                        {
                            "type": "Image",
                            "url": f"{base_uri}/Images/EmailNotifications.png",
                            "size": "Small",
                            "style": "Default",
                            "selectAction": open_url,
                            "horizontalAlignment": "Center",
                            "spacing": "None"
                        }
                    ]
                },
                {
                    "type": "Column",
                    "width": "auto",
                    "items": [
                        {
                            "type": "TextBlock",
                            "text": "Email Notifications",
                            "color": "Accent",
                            "size": "Medium",
                            "spacing": "None",
                            "horizontalAlignment": "Center"
                        }
                    ],
                    "selectAction": open_url
                }
            ]
        })

    return CardFactory.adaptive_card({
        "$schema": "http://adaptivecards.io/schemas/adaptive-card.json",
        "type": "AdaptiveCard",
        "version": "1.0",
        "body": [
            {
                "type": "Container",
                "items": body
            }
        ]
    })
