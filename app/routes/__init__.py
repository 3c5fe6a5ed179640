#app/routes/__init__.py

from .driver import router as driver_router
from .vehicle import router as vehicle_router
from .schedule import router as schedule_router
from .payment import router as payment_router
