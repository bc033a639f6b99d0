from amqp_patterns.main import app

app()
