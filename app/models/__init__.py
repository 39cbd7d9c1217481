# Toll checkpoint — Database Models
# Import all models here for SQLAlchemy discovery

from app.models.station import Station, Gate                                 # noqa
from app.models.body_type import VehicleBodyType, VehicleBodyTypePrice       # noqa
from app.models.payment_type import PaymentType                              # noqa
from app.models.account import Account, AccountVehicle, BundleSubscription   # noqa
from app.models.vehicle import Vehicle                                       # noqa
from app.models.camera_detection import CameraDetection                      # noqa
from app.models.vehicle_passage import VehiclePassage                        # noqa
from app.models.receipt import Receipt                                       # noqa
