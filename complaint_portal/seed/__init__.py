# Seed data: bootstrap admin plus demo departments, staff, citizens and complaints
