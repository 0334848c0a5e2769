import firebase_admin
from firebase_admin import credentials, firestore, auth
import os
import json

from dotenv import load_dotenv

load_dotenv()

CREDENTIALS_PATH = os.environ.get('FIREBASE_CREDENTIALS_PATH', 'serviceAccountKey.json')

# Service account file first, then the JSON blob in FIREBASE_CREDENTIALS
if os.path.exists(CREDENTIALS_PATH):
    cred = credentials.Certificate(CREDENTIALS_PATH)
else:
    firebase_creds = os.environ.get('FIREBASE_CREDENTIALS')
    if firebase_creds:
        cred = credentials.Certificate(json.loads(firebase_creds))
    else:
        raise FileNotFoundError("Firebase credentials not found!")

if not firebase_admin._apps:
    firebase_admin.initialize_app(cred)

auth = auth
db = firestore.client()
