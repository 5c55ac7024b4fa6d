import nox

nox.needs_version = ">=2024.4.15"
nox.options.default_venv_backend = "uv|virtualenv"


@nox.session(python=["3.10", "3.11", "3.12"])
def tests(session: nox.Session) -> None:
    session.install("-e.[test]")
    session.run("pytest", "--cov=docstore", "--cov-report=term-missing", "tests", *session.posargs)


@nox.session
def smoke(session: nox.Session) -> None:
    # The installed package and its entry point must import cleanly.
    session.install(".")
    session.run("python", "-c", "from docstore.app import main")
