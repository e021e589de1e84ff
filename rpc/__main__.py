"""Command line interface for checking collaborator connectivity"""
from . import PaymentRPC, NodeConnectionError, NodeAuthError, PaymentError
from .storefront import StorefrontClient, StorefrontError


def test_rpc():
    """Ping the payment executor and fetch the storefront catalog"""
    print("\nPayment executor:")
    print("-" * 50)
    client = PaymentRPC()
    try:
        client.ping()
        print(f"  Success! {client.url} is reachable")
    except NodeAuthError as e:
        print(f"  Authentication failed: {e}")
    except PaymentError as e:
        print(f"  Executor error: {e}")
    except NodeConnectionError as e:
        print(f"  Connection failed: {e}")

    print("\nStorefront catalog:")
    print("-" * 50)
    storefront = StorefrontClient()
    if not storefront.base_url:
        print("  storefront_url not configured")
        return
    try:
        assets = storefront.fetch_catalog()
        print(f"  Success! {len(assets)} products")
        for asset in assets[:5]:
            print(f"  {asset.id}: {asset.name}")
    except StorefrontError as e:
        print(f"  Failed: {e}")


if __name__ == "__main__":
    test_rpc()
