"""
Listings app.

Holds the minimal Listing record orders are placed against: who sells it,
its price, how many units are left and whether it can be bought.
Browsing and search live outside this codebase.
"""
