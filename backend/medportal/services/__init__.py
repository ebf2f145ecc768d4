"""Domain services: identity, access policy, entitlements, referral ledger and rewards."""
