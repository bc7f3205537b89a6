"""Allow `python -m codebox.worker`."""

from codebox.worker.runtime import app

if __name__ == "__main__":
    app(prog_name="codebox-worker")
