"""Cart, coupon, checkout and order services."""
