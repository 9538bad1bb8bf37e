from labwatch.main import app


def run_http(host: str = "0.0.0.0", port: int = 8000):
    """Run the API server"""
    import uvicorn
    print(f"Starting LabWatch API on {host}:{port}...")
    uvicorn.run(
        "labwatch.main:app",  # Use string import
        host=host,
        port=port,
        reload=False
    )


if __name__ == "__main__":
    import sys

    port = 8000
    if "--port" in sys.argv:
        port = int(sys.argv[sys.argv.index("--port") + 1])
    run_http(port=port)
