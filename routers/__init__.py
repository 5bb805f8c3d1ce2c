"""Router package -- one APIRouter per domain, included by app.py."""

from routers.state import router as state_router
from routers.parameters import router as parameters_router
from routers.credentials import router as credentials_router
from routers.catalog import router as catalog_router
from routers.websocket import router as websocket_router

all_routers = [
    state_router,
    parameters_router,
    credentials_router,
    catalog_router,
    websocket_router,
]
