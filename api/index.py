from mangum import Mangum
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from settlement.api import create_app
from settlement.config import Settings, configure_logging

settings = Settings.from_env()
configure_logging(settings)

app = create_app(settings=settings, root_path="/api")

handler = Mangum(app)
