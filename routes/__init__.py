from .auth_routes import router as auth_routes
from .user_routes import router as user_routes
from .book_routes import router as book_routes
from .trade_routes import router as trade_routes

__all__ = [
    'auth_routes',
    'user_routes',
    'book_routes',
    'trade_routes'
]
