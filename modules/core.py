"""
Центральный модуль для предоставления доступа к основному экземпляру Flask
и другим общим ресурсам.
"""

from flask import current_app, has_app_context
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_caching import Cache
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
import logging
import os
from dotenv import load_dotenv

# Загрузка переменных окружения
load_dotenv()

logger = logging.getLogger(__name__)

# Основной экземпляр Flask (будет инициализирован в app.py)
app = None

# Расширения Flask
db = SQLAlchemy()
cache = Cache()
limiter = Limiter(get_remote_address, default_limits=["2000 per day", "500 per hour"], storage_uri="memory://")


def _check_database(database_url):
    """Проверяет доступность PostgreSQL"""
    from sqlalchemy import create_engine, text
    test_engine = create_engine(database_url, connect_args={"connect_timeout": 2})
    with test_engine.connect() as conn:
        conn.execute(text("SELECT 1"))


def _configure_database(flask_app):
    # Конфигурация базы данных (PostgreSQL или SQLite)
    database_url = os.getenv("DATABASE_URL")

    if not database_url and os.getenv("DB_TYPE", "").lower() in ("postgresql", "postgres"):
        # PostgreSQL из отдельных переменных
        db_host = os.getenv("DB_HOST", "localhost")
        db_port = os.getenv("DB_PORT", "5432")
        db_name = os.getenv("DB_NAME", "stealthnet")
        db_user = os.getenv("DB_USER", "stealthnet")
        db_password = os.getenv("DB_PASSWORD", "")

        if db_password:
            database_url = f"postgresql://{db_user}:{db_password}@{db_host}:{db_port}/{db_name}"
        else:
            database_url = f"postgresql://{db_user}@{db_host}:{db_port}/{db_name}"

    if database_url:
        try:
            _check_database(database_url)
            flask_app.config['SQLALCHEMY_DATABASE_URI'] = database_url
            logger.info("База данных: PostgreSQL")
            return
        except Exception as e:
            # PostgreSQL недоступен, используем SQLite
            logger.warning("PostgreSQL недоступен (%s), используем SQLite", str(e)[:100])

    flask_app.config['SQLALCHEMY_DATABASE_URI'] = 'sqlite:///stealthnet.db'
    logger.info("База данных: SQLite (stealthnet.db)")


def _configure_cache(flask_app):
    # Конфигурация кэширования (Redis, FileSystemCache или null)
    cache_type = os.getenv("CACHE_TYPE", "null").lower()
    timeout = int(os.getenv("CACHE_DEFAULT_TIMEOUT", 300))

    if cache_type == "redis":
        redis_host = os.getenv("REDIS_HOST", "localhost")
        redis_port = int(os.getenv("REDIS_PORT", 6379))
        redis_db = int(os.getenv("REDIS_DB", 0))
        redis_password = os.getenv("REDIS_PASSWORD", None)

        if redis_password:
            redis_url = f"redis://:{redis_password}@{redis_host}:{redis_port}/{redis_db}"
        else:
            redis_url = f"redis://{redis_host}:{redis_port}/{redis_db}"

        try:
            # Проверяем подключение к Redis напрямую перед инициализацией Cache
            import redis
            test_redis = redis.Redis(host=redis_host, port=redis_port, db=redis_db, password=redis_password, socket_connect_timeout=2)
            test_redis.ping()
            flask_app.config['CACHE_TYPE'] = 'RedisCache'
            flask_app.config['CACHE_REDIS_URL'] = redis_url
            flask_app.config['CACHE_DEFAULT_TIMEOUT'] = timeout
            logger.info("Кэширование: Redis (%s:%s, DB %s)", redis_host, redis_port, redis_db)
            return
        except Exception as e:
            # Если Redis недоступен, используем FileSystemCache
            logger.warning("Redis недоступен (%s), используем FileSystemCache", str(e)[:100])
            cache_type = "filesystem"

    if cache_type == "filesystem":
        cache_dir = os.path.join(flask_app.instance_path, 'cache')
        os.makedirs(cache_dir, exist_ok=True)
        flask_app.config['CACHE_TYPE'] = 'FileSystemCache'
        flask_app.config['CACHE_DIR'] = cache_dir
        flask_app.config['CACHE_DEFAULT_TIMEOUT'] = timeout
        logger.info("Кэширование: FileSystemCache (%s)", cache_dir)
    else:
        # Null cache (отключено) - для разработки
        flask_app.config['CACHE_TYPE'] = 'NullCache'
        logger.info("Кэширование: отключено (null cache)")


def init_app(flask_app, config=None):
    """
    Инициализация основного экземпляра Flask и всех расширений.
    Этот метод должен быть вызван из app.py.

    config - словарь с явными настройками, перекрывающими переменные окружения
    (используется в тестах).
    """
    global app

    app = flask_app
    config = config or {}

    app.config['JWT_SECRET_KEY'] = os.getenv("JWT_SECRET_KEY")
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False

    # Цены считаются в одной расчётной валюте
    app.config['PRICING_CURRENCY'] = os.getenv("PRICING_CURRENCY", "USD").upper()
    app.config['PRICING_CACHE_TIMEOUT'] = int(os.getenv("PRICING_CACHE_TIMEOUT", 600))

    if 'SQLALCHEMY_DATABASE_URI' not in config:
        _configure_database(app)
    if 'CACHE_TYPE' not in config:
        _configure_cache(app)

    app.config.update(config)

    # Инициализация расширений (идемпотентно: миграции вызывают init_app повторно)
    if 'sqlalchemy' not in app.extensions:
        db.init_app(app)
    if 'cache' not in app.extensions:
        cache.init_app(app)
    if 'limiter' not in app.extensions:
        limiter.init_app(app)

    CORS(app, resources={r"/api/.*": {
        "origins": [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:5000").split(",") if o.strip()]
    }})


def get_app():
    """Возвращает основной экземпляр Flask"""
    if has_app_context():
        return current_app._get_current_object()
    if app is None:
        raise RuntimeError("Flask app not initialized. Call init_app() first.")
    return app


def get_db():
    """Возвращает экземпляр SQLAlchemy"""
    if not has_app_context() and app is None:
        raise RuntimeError("Database not initialized. Call init_app() first.")
    return db


def get_cache():
    """Возвращает экземпляр Cache"""
    if not has_app_context() and app is None:
        raise RuntimeError("Cache not initialized. Call init_app() first.")
    return cache


def get_limiter():
    """Возвращает экземпляр Limiter"""
    if not has_app_context() and app is None:
        raise RuntimeError("Limiter not initialized. Call init_app() first.")
    return limiter
