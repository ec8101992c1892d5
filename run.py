#!/usr/bin/env python3
"""dnsmasq DHCP sync development server"""
import os
import sys
import argparse
from pathlib import Path


def load_config(config_file: Path) -> dict:
    """Load host/port from config.yaml, creating it with defaults if missing."""
    import yaml

    default_config = {"port": 8000, "host": "127.0.0.1"}

    if not config_file.exists():
        try:
            with open(config_file, "w") as f:
                yaml.dump(default_config, f)
            print(f"Created default configuration: {config_file}")
        except OSError as e:
            print(f"Warning: Could not create config file: {e}")
        return default_config

    try:
        with open(config_file, "r") as f:
            config = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        print(f"Warning: Could not read config file: {e}")
        return default_config

    # Merge with defaults to ensure all keys exist
    return {**default_config, **config}


def main():
    root_dir = Path(__file__).parent.resolve()
    backend_dir = root_dir / "backend"
    config = load_config(root_dir / "config.yaml")

    parser = argparse.ArgumentParser(description="dnsmasq DHCP sync development server")
    parser.add_argument("--host", default=config.get("host", "127.0.0.1"), help=f"Host to bind (default: {config.get('host', '127.0.0.1')})")
    parser.add_argument("--port", "-p", type=int, default=config.get("port", 8000), help=f"Port to bind (default: {config.get('port', 8000)})")
    parser.add_argument("--reload", "-r", action="store_true", help="Enable auto-reload")
    parser.add_argument("--debug", "-d", action="store_true", help="Enable debug mode")
    args = parser.parse_args()

    if args.debug:
        os.environ["DNSMASQ_DHCP_DEBUG"] = "true"

    # Add backend to path
    sys.path.insert(0, str(backend_dir))

    print("=" * 50)
    print("dnsmasq DHCP sync development server")
    print("=" * 50)
    print(f"  Host: {args.host}")
    print(f"  Port: {args.port}")
    print(f"  Reload: {args.reload}")
    print(f"  Debug: {args.debug}")
    print("=" * 50)
    print(f"\n  → http://{args.host}:{args.port}")
    print(f"  → http://{args.host}:{args.port}/docs (Swagger UI)")
    print("\n  Press Ctrl+C to stop\n")

    # Check if port is already in use
    import socket
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.bind((args.host, args.port))
        sock.close()
    except OSError:
        print(f"\n  ✗ Port {args.port} is already in use!")
        print(f"    Use another port: python run.py -p {args.port + 1}\n")
        sys.exit(1)

    try:
        import uvicorn
        uvicorn.run(
            "dnsmasq_dhcp.main:app",
            host=args.host,
            port=args.port,
            reload=args.reload,
            app_dir=str(backend_dir),
            log_level="info",
            access_log=True,
            use_colors=False,
        )
    except KeyboardInterrupt:
        pass

    print("\nStopped.")


if __name__ == "__main__":
    main()
