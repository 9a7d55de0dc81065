# compliance_api/wsgi.py
from compliance_api import create_app

app = create_app()
