"""
Core modules for Refill Guard.

This package contains the inventory commands, usage forecasting, the
reminder decision engine, reminder scheduling and the tracker service.
"""
