"""Bidding room: turn-based quote negotiation between a homeowner and an installer."""
