"""Business logic services: rule precedence, calculation and payout workflow."""
