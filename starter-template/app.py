"""
Subscribely Starter App
=======================

A ready-to-run subscription API.

Run with:
    python app.py

Storage is picked from SUBSCRIBER_STORAGE (file | sqlite | remote), see .env.

Endpoints:
    POST http://localhost:3001/api/subscribe
    POST http://localhost:3001/api/unsubscribe
    GET  http://localhost:3001/api/subscribers
    GET  http://localhost:3001/api/subscribers/stats
"""

import logging
from subscribely import create_app
from subscribely.core import Config

logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(name)s: %(message)s')

app = create_app()


if __name__ == '__main__':
    port = Config.port
    print("\n" + "=" * 60)
    print("Subscribely Starter")
    print("=" * 60)
    print(f"Subscribe API:   http://localhost:{port}/api/subscribe")
    print(f"Subscriber list: http://localhost:{port}/api/subscribers")
    print(f"Statistics:      http://localhost:{port}/api/subscribers/stats")
    print("=" * 60 + "\n")

    app.run(host='0.0.0.0', port=port, debug=True)
