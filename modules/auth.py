from flask import request, jsonify
from functools import wraps
import jwt
from datetime import datetime, timedelta, timezone

from modules.core import get_app, get_db
from modules.models.user import User

# Получаем основной экземпляр Flask и расширения из центрального модуля
app = get_app()
db = get_db()


# Функции аутентификации
def create_local_jwt(user_id):
    payload = {'iat': datetime.now(timezone.utc), 'exp': datetime.now(timezone.utc) + timedelta(days=1), 'sub': str(user_id)}
    token = jwt.encode(payload, app.config['JWT_SECRET_KEY'], algorithm="HS256")
    return token


def get_user_from_token():
    auth_header = request.headers.get('Authorization')
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    try:
        local_token = auth_header.split(" ")[1]
        payload = jwt.decode(local_token, app.config['JWT_SECRET_KEY'], algorithms=["HS256"])
        return db.session.get(User, int(payload['sub']))
    except (jwt.PyJWTError, KeyError, ValueError):
        return None


def login_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user = get_user_from_token()
        if not user:
            return jsonify({"message": "Auth Error"}), 401
        kwargs['current_user'] = user
        return f(*args, **kwargs)
    return decorated_function
