import sys

from invoke import run, task


class g:
    test_success = False


@task
def test(ctx, all=False):
    test_cmd = [
        "pytest",  # Test command
        "--cov-report term-missing",  # Print only uncovered lines to stdout
        "--cov docstore",  # Test only this package
    ]

    # Test in this directory
    test_cmd.append("tests")

    res = run(" ".join(test_cmd), pty=False)
    g.test_success = res.ok


@task
def serve(ctx):
    run("python -m docstore", pty=False)


@task(pre=[test])
def build(ctx):
    if not g.test_success:
        print("Tests must pass before building!", file=sys.stderr)
        return

    run("python -m build")
