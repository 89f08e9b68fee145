import nox

nox.needs_version = ">=2024.4.15"
nox.options.default_venv_backend = "uv|virtualenv"


@nox.session
@nox.parametrize("editable", [True, False])
def tests(session: nox.Session, editable: bool) -> None:
    session.install("-e.[test]" if editable else ".[test]")
    session.run("pytest", "--timeout=30", "tests", *session.posargs)


@nox.session
def deprecations(session: nox.Session) -> None:
    session.install(".")
    # The combined parser warns when built, but importing stays silent.
    assert "DeprecationWarning" not in session.run("python", "-Wdefault", "-c", "import bory", silent=True)
    assert "use individual json/urlencoded middlewares" in session.run(
        "python", "-Wdefault", "-c", "import bory; bory.body_parser(extended=True)", silent=True
    )
    assert "undefined extended" in session.run(
        "python", "-Wdefault", "-c", "import bory; bory.urlencoded()", silent=True
    )
