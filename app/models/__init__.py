# Importing the package registers every table on Base.metadata
from .vehicle import Vehicle
from .customer import Customer, Driver
from .reservation import Reservation
from .outbox import OutboxEvent
