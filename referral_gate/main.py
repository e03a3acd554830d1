from referral_gate.core.app_factory import create_app

app = create_app()


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    uvicorn.run("referral_gate.main:app", host="0.0.0.0", port=8000)


if __name__ == "__main__":
    run()
