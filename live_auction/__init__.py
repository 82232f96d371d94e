"""
Live auction bidding coordinator.
"""
