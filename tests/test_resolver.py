import pickle

import pytest

from groundwork_automation.errors import ValidationError
from groundwork_automation.resolver import (
    BOOL,
    CHOICE,
    INT,
    ParameterResolver,
    ParameterSpec,
    RunConfig,
    domain,
    email,
    port_in_range,
    resolve,
    sql_identifier,
    unix_username,
    version,
)
from groundwork_automation.secrets import MASK, Secret, forget_secrets


@pytest.fixture(autouse=True)
def _forget():
    yield
    forget_secrets()


class ScriptedPrompter:
    def __init__(self, *answers):
        self.answers = list(answers)
        self.asked: list[tuple[str, object]] = []
        self.errors: list[str] = []

    def ask(self, spec, default):
        self.asked.append((spec.name, default))
        return self.answers.pop(0)

    def error(self, spec, message):
        self.errors.append(message)


SSH_PORT = ParameterSpec("ssh_port", "SSH port", default=2222, validator=port_in_range(1024, 65535))


def test_privileged_port_rejected() -> None:
    with pytest.raises(ValidationError) as excinfo:
        resolve([SSH_PORT], overrides={"ssh_port": "80"}, environ={}, interactive=False)
    assert excinfo.value.parameter == "ssh_port"
    assert "80 is outside 1024-65535" in str(excinfo.value)


def test_precedence_override_env_config_default() -> None:
    schema = [
        ParameterSpec("a", "a", default="default"),
        ParameterSpec("b", "b", default="default"),
        ParameterSpec("c", "c", default="default"),
        ParameterSpec("d", "d", default="default"),
    ]
    config = resolve(
        schema,
        overrides={"a": "cli"},
        environ={"GROUNDWORK_A": "env", "GROUNDWORK_B": "env"},
        config_values={"a": "file", "b": "file", "c": "file"},
        interactive=False,
    )
    assert dict(config) == {"a": "cli", "b": "env", "c": "file", "d": "default"}


def test_port_is_normalized_to_int() -> None:
    config = resolve([SSH_PORT], environ={"GROUNDWORK_SSH_PORT": " 2200 "}, interactive=False)
    assert config["ssh_port"] == 2200


def test_missing_required_non_interactive() -> None:
    schema = [ParameterSpec("username", "User", validator=unix_username)]
    with pytest.raises(ValidationError, match="username: no value supplied"):
        resolve(schema, environ={}, interactive=False)


def test_optional_parameter_is_left_out() -> None:
    schema = [ParameterSpec("ruby_version", "Ruby", validator=version, required=False)]
    config = resolve(schema, environ={}, interactive=False)
    assert "ruby_version" not in config
    assert config.get("ruby_version") is None


def test_unknown_override_rejected() -> None:
    with pytest.raises(ValidationError, match="sshport"):
        resolve([SSH_PORT], overrides={"sshport": "2222"}, environ={}, interactive=False)


def test_duplicate_schema_names() -> None:
    with pytest.raises(ValueError, match="duplicate"):
        resolve([SSH_PORT, SSH_PORT], environ={}, interactive=False)


def test_conditional_parameters() -> None:
    schema = [
        ParameterSpec("install_postgres", "Postgres?", default=False, kind=BOOL),
        ParameterSpec("pg_username", "PG user", validator=sql_identifier, when=lambda v: v.get("install_postgres")),
    ]
    skipped = resolve(schema, environ={}, interactive=False)
    assert dict(skipped) == {"install_postgres": False}

    with pytest.raises(ValidationError, match="pg_username"):
        resolve(schema, overrides={"install_postgres": "yes"}, environ={}, interactive=False)


def test_callable_default_sees_earlier_values() -> None:
    schema = [
        ParameterSpec("db_user", "user", default="app"),
        ParameterSpec("db_name", "name", default=lambda values: values["db_user"] + "_db"),
    ]
    assert resolve(schema, environ={}, interactive=False)["db_name"] == "app_db"


def test_choice_and_int_kinds() -> None:
    schema = [
        ParameterSpec("php_version", "PHP", default="8.2", kind=CHOICE, choices=("8.3", "8.2")),
        ParameterSpec("workers", "Workers", default="4", kind=INT),
    ]
    config = resolve(schema, environ={}, interactive=False)
    assert config["php_version"] == "8.2"
    assert config["workers"] == 4
    with pytest.raises(ValidationError, match="not one of"):
        resolve(schema, overrides={"php_version": "5.6"}, environ={}, interactive=False)


def test_secret_parameters_are_wrapped_and_masked() -> None:
    schema = [ParameterSpec("pg_password", "Password", secret=True)]
    config = resolve(schema, overrides={"pg_password": "hunter2!"}, environ={}, interactive=False)

    assert isinstance(config["pg_password"], Secret)
    assert config.secret("pg_password").reveal() == "hunter2!"
    assert config.public() == {}
    assert "hunter2" not in repr(config)
    assert MASK in repr(config)
    with pytest.raises(TypeError):
        pickle.dumps(config["pg_password"])


def test_empty_secret_rejected() -> None:
    schema = [ParameterSpec("pg_password", "Password", secret=True)]
    with pytest.raises(ValidationError, match="must not be empty"):
        resolve(schema, overrides={"pg_password": ""}, environ={}, interactive=False)


def test_prompter_retries_bad_answers() -> None:
    prompter = ScriptedPrompter("80", "22", "2222")
    config = ParameterResolver(environ={}, prompter=prompter).resolve([SSH_PORT])
    assert config["ssh_port"] == 2222
    assert prompter.asked == [("ssh_port", 2222)] * 3
    assert len(prompter.errors) == 2


def test_prompter_gives_up_after_three_attempts() -> None:
    prompter = ScriptedPrompter("root", "root", "root")
    schema = [ParameterSpec("username", "User", validator=unix_username)]
    with pytest.raises(ValidationError, match="must not be root"):
        ParameterResolver(environ={}, prompter=prompter).resolve(schema)


def test_prompt_is_not_used_when_value_supplied() -> None:
    prompter = ScriptedPrompter()
    config = ParameterResolver(overrides={"ssh_port": "2200"}, environ={}, prompter=prompter).resolve([SSH_PORT])
    assert config["ssh_port"] == 2200
    assert prompter.asked == []


def test_config_value_from_aws_secret(monkeypatch) -> None:
    class FakeClient:
        def get_secret_value(self, SecretId):
            return {"SecretString": '{"password": "from-aws"}'}

    class FakeBoto3:
        def client(self, name):
            return FakeClient()

    monkeypatch.setattr("groundwork_automation.secrets.boto3", FakeBoto3())
    schema = [ParameterSpec("pg_password", "Password", secret=True)]
    config = resolve(
        schema,
        config_values={"pg_password": {"aws_secret": "prod/db", "key": "password"}},
        environ={},
        interactive=False,
    )
    assert config.secret("pg_password").reveal() == "from-aws"


def test_aws_secret_without_boto3_is_a_validation_error(monkeypatch) -> None:
    monkeypatch.setattr("groundwork_automation.secrets.boto3", None)
    schema = [ParameterSpec("pg_password", "Password", secret=True)]
    with pytest.raises(ValidationError, match="boto3 is required"):
        resolve(schema, config_values={"pg_password": {"aws_secret": "prod/db"}}, environ={}, interactive=False)


def test_run_config_is_read_only() -> None:
    config = RunConfig({"a": 1})
    with pytest.raises(AttributeError):
        config.a = 2  # type: ignore[attr-defined]
    with pytest.raises(TypeError):
        config["a"] = 2  # type: ignore[index]
    with pytest.raises(TypeError):
        config.secret("a")


@pytest.mark.parametrize(
    "validator,value",
    [
        (unix_username, "Deploy"),
        (unix_username, "root"),
        (sql_identifier, "drop table;"),
        (sql_identifier, "1abc"),
        (domain, "localhost"),
        (email, "admin@"),
        (version, "latest"),
    ],
)
def test_validators_reject(validator, value) -> None:
    with pytest.raises(ValueError):
        validator(value)


def test_validators_accept() -> None:
    assert unix_username("deploy") == "deploy"
    assert sql_identifier("laravel_db") == "laravel_db"
    assert domain("Example.COM.") == "example.com"
    assert email("ops@example.com") == "ops@example.com"
    assert version("3.2.2") == "3.2.2"
