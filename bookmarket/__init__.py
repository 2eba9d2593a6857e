"""
FastAPI REST backend for the BookMarket online book marketplace.

This package provides:
- Book catalog browsing, search and librarian management
- Orders with hosted checkout and payment confirmation
- Wishlists and reviews with aggregate book ratings
- Bearer-token authentication with user/librarian/admin roles
"""
