import os
import sys
from importlib import reload
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

ADMIN_TOKEN = "admintoken"


@pytest.fixture(scope="function")
def app_module(tmp_path_factory):
    """
    Reload the app against a disposable SQLite DB.
    """
    db_path = tmp_path_factory.mktemp("data") / "test.db"
    new_env = {
        "DB_URL": f"sqlite:///{db_path}",
        "SERVICE_TOKEN": "servicetoken",
        "ADMIN_TOKEN": ADMIN_TOKEN,
        "DEBIT_POLICY": "clamp",
    }
    old_env = {k: os.environ.get(k) for k in new_env}
    os.environ.update(new_env)

    try:
        import app.config as config
        import app.logging_config as logging_config
        import app.database as database
        import app.models.models as models
        import app.errors as errors
        import app.transaction_log as transaction_log
        import app.ledger as ledger
        import app.mutator as mutator
        import app.outcome as outcome
        import app.round_clock as round_clock
        import app.games as games
        import app.rewards as rewards
        import app.settlement as settlement
        import app.reconciliation as reconciliation
        import app.db as db
        import app.helpers as helpers
        import app.schemas.app_schemas as app_schemas
        import app.security as security
        import app.main as main

        # Enums and error classes are recreated on reload, so every module
        # importing them has to be reloaded after them.
        for module in (
            config,
            logging_config,
            database,
            models,
            errors,
            transaction_log,
            ledger,
            mutator,
            outcome,
            round_clock,
            games,
            rewards,
            settlement,
            reconciliation,
            db,
            helpers,
            app_schemas,
            security,
            main,
        ):
            reload(module)

        main.app.dependency_overrides[main.require_service_token] = lambda: None

        models.Base.metadata.drop_all(bind=database.engine)
        models.Base.metadata.create_all(bind=database.engine)
        return main, database, models
    finally:
        for key, value in old_env.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value


@pytest.fixture
def client(app_module):
    main, database, models = app_module
    with TestClient(main.app) as client:
        yield client


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {ADMIN_TOKEN}"}


@pytest.fixture
def session(app_module):
    _, database, _ = app_module
    db = database.SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def fund(session):
    """Open a wallet and set its categories to exact cent values."""

    def _fund(user_id, referrer_user_id=None, **categories):
        from app.config import BalanceCategory
        from app.ledger import WalletLedger
        from app.mutator import BalanceMutator

        mutator = BalanceMutator(session)
        mutator.open_wallet(user_id, referrer_user_id=referrer_user_id)
        wallet = WalletLedger(session).get_wallet(user_id)
        for category in BalanceCategory:
            wallet_value = getattr(wallet, category.column)
            wanted = categories.get(category.value, 0)
            if wanted > wallet_value:
                adjustment = mutator.adjust(user_id, category, wanted - wallet_value, "credit")
                mutator.record(user_id, adjustment, "deposit", "Test funding")
            elif wanted < wallet_value:
                adjustment = mutator.adjust(user_id, category, wallet_value - wanted, "debit")
                mutator.record(user_id, adjustment, "adjustment", "Test funding")
            session.refresh(wallet)
        return wallet

    return _fund
