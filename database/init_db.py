import os
import sys

BASE_DIR = os.path.dirname(os.path.dirname(__file__))
if BASE_DIR not in sys.path:
    sys.path.insert(0, BASE_DIR)

from contract_hub import create_app
from contract_hub.application.user_service import UserService
from contract_hub.db import get_db, init_db


app = create_app()


if __name__ == "__main__":
    with app.app_context():
        init_db()
        if os.environ.get("SEED_DEMO_USERS", "0").strip().lower() in {"1", "true", "yes"}:
            for email in UserService().seed_demo_users(get_db()):
                print(f"Created {email}")
    print("Database initialized.")
