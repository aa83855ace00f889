"""clubsync: Wild Apricot membership, event, and registration sync for ClubOS."""
