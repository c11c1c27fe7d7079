"""Golden Tower Spa portal backend"""
