from mangum import Mangum
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from rigledger.api import create_app
from rigledger.config import configure_logging

configure_logging()

app = create_app(root_path="/api")

handler = Mangum(app)
