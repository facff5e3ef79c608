from pharmacy_store.core.config import settings
from pharmacy_store.core.database import get_db, Base, get_db_session
from pharmacy_store.core.security import decode_token, get_actor_from_token
