"""
FastAPI backend for foodsync.

Provides REST API endpoints for:
- Searching the Open Food Facts catalog through a TTL cache
- Looking up single products by barcode
- Driving resumable seed runs that pre-populate the local product table
"""
