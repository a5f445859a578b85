"""Create an approved sandbox merchant with one API key.

The plaintext secret key is printed once; only its hash is stored.
"""

import argparse

from sandpay.common.config import settings
from sandpay.common.db import create_schema, create_session_factory
from sandpay.services.gateway.auth import issue_api_key
from sandpay.services.gateway.models import Merchant
from sandpay.services.webhooks.models import WebhookEndpoint


def seed(
    database_url: str,
    business_name: str,
    email: str | None,
    webhook_url: str | None,
    webhook_secret: str | None,
    create_tables: bool,
) -> int:
    """Insert the merchant rows and print the credentials."""

    factory = create_session_factory(database_url)
    if create_tables:
        create_schema(factory)

    with factory() as db:
        merchant = Merchant(business_name=business_name, contact_email=email, status="approved")
        db.add(merchant)
        db.flush()
        issued = issue_api_key(db, merchant.id, name="seed")
        endpoint = None
        if webhook_url:
            endpoint = WebhookEndpoint(
                merchant_id=merchant.id,
                url=webhook_url,
                secret=webhook_secret or f"whsec_{issued.public_key[3:]}",
                active=True,
            )
            db.add(endpoint)
        db.commit()

        print(f"merchant_id={merchant.id}")
        print(f"public_key={issued.public_key}")
        print(f"secret_key={issued.secret_key}")
        if endpoint is not None:
            print(f"webhook_endpoint_id={endpoint.id}")
            print(f"webhook_secret={endpoint.secret}")
    return 0


def main() -> None:
    """CLI entrypoint for local sandbox setup."""

    parser = argparse.ArgumentParser(description="Seed an approved merchant and API key.")
    parser.add_argument("--database-url", default=settings.database_url)
    parser.add_argument("--business-name", default="Sandbox Merchant")
    parser.add_argument("--email", default=None)
    parser.add_argument("--webhook-url", default=None, help="register an active webhook endpoint")
    parser.add_argument("--webhook-secret", default=None)
    parser.add_argument("--create-tables", action="store_true", help="create tables first (SQLite dev runs)")
    args = parser.parse_args()

    raise SystemExit(
        seed(
            database_url=args.database_url,
            business_name=args.business_name,
            email=args.email,
            webhook_url=args.webhook_url,
            webhook_secret=args.webhook_secret,
            create_tables=args.create_tables,
        )
    )


if __name__ == "__main__":
    main()
