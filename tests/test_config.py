from core.config import Settings


def test_app_name_and_version_aliases(monkeypatch):
    monkeypatch.delenv("PROJECT_NAME", raising=False)
    monkeypatch.delenv("VERSION", raising=False)
    monkeypatch.setenv("APP_NAME", "Clinic Billing")
    monkeypatch.setenv("APP_VERSION", "2.3.0")

    settings = Settings(_env_file=None)

    assert settings.PROJECT_NAME == "Clinic Billing"
    assert settings.VERSION == "2.3.0"


def test_primary_names_take_precedence(monkeypatch):
    monkeypatch.setenv("PROJECT_NAME", "Payments API")
    monkeypatch.setenv("APP_NAME", "Clinic Billing")

    assert Settings(_env_file=None).PROJECT_NAME == "Payments API"

