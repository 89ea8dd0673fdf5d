"""
Domain Services - routing, policy and delivery for the chatbot engine
"""
