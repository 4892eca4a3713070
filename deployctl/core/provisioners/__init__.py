"""
Provisioners — one per managed resource, each idempotent:
check what exists, create what is missing, verify the result.
"""
