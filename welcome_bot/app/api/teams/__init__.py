"""Teams messaging endpoint and card templates."""
from .routes import router
from .adaptive_cards import create_welcome_card

__all__ = ["router", "create_welcome_card"]
