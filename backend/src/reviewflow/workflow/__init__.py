"""Review workflow: engine, stage administration and read queries"""
