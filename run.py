import logging
import os
from consultbook import create_app

app = create_app()
logging.basicConfig(
    level=app.config["LOG_LEVEL"],
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

if __name__ == "__main__":
    use_https = os.getenv("HTTPS", "0") == "1"
    if use_https:
        # Ad-hoc self-signed certificate for local HTTPS
        app.run(debug=True, ssl_context="adhoc")
    else:
        app.run(debug=True)
