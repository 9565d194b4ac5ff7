"""
Telehealth Booking Test Suite
Scheduling rules, provider gateways, booking saga and API surface
"""
