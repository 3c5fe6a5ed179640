# app/schemas/__init__.py
from .driver import DriverCreate, DriverUpdate, DriverOut
from .vehicle import VehicleCreate, VehicleUpdate, VehicleOut
from .schedule import ScheduleCreate, ScheduleUpdate, ScheduleStatusChange, ScheduleOut
from .payment import PaymentCreate, PaymentUpdate, PaymentStatusChange, PaymentOut
