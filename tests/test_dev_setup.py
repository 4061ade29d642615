import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1] / "scripts"))

import dev_setup


def test_env_file_is_created_and_updated(tmp_path, capsys):
    env_path = tmp_path / ".env"
    env_path.write_text("SECRET_KEY=keep-me\nOPENAI_MODEL=gpt-4o-mini\n")

    dev_setup.main(
        [
            "--env-path",
            str(env_path),
            "--openai-api-key",
            "sk-local-5678",
            "--openai-model",
            "llama3",
            "--skip-db",
        ]
    )

    values = dev_setup.dotenv_values(env_path)
    assert values["SECRET_KEY"] == "keep-me"
    assert values["OPENAI_MODEL"] == "llama3"
    assert values["OPENAI_API_KEY"] == "sk-local-5678"
    assert values["FLASK_APP"] == "wsgi.py"
    assert (tmp_path / ".env.bak").exists()

    output = capsys.readouterr().out
    assert "OPENAI_API_KEY=****5678" in output
    assert "sk-local-5678" not in output


def test_only_given_options_are_collected():
    args = dev_setup.parse_args(["--log-level", "DEBUG"])

    assert dev_setup.collect_updates(args) == {"FLASK_APP": "wsgi.py", "LOG_LEVEL": "DEBUG"}
