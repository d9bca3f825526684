"""SQL sandbox provisioning, execution and grading engine"""
