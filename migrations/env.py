from alembic import context
from sqlalchemy import engine_from_config, pool
import os, sys
sys.path.append(os.path.abspath("."))
from nfse_sync.models import Base  # noqa
from nfse_sync.settings import settings  # noqa

config = context.config
db_url = os.getenv("DB_URL", settings.DB_URL)
config.set_main_option("sqlalchemy.url", db_url)
target_metadata = Base.metadata

def run_migrations_offline():
    context.configure(url=db_url, target_metadata=target_metadata, literal_binds=True)
    with context.begin_transaction(): context.run_migrations()

def run_migrations_online():
    connectable = engine_from_config(config.get_section(config.config_ini_section), prefix="sqlalchemy.", poolclass=pool.NullPool)
    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)
        with context.begin_transaction(): context.run_migrations()

if context.is_offline_mode(): run_migrations_offline()
else: run_migrations_online()
