"""SmartPredict storefront backend: chat intents, session carts, checkout, and insights."""
