from flask_jwt_extended import JWTManager
from flask_mail import Mail
from flask_sqlalchemy import SQLAlchemy

from scheduler import TaskQueue

db = SQLAlchemy()
jwt = JWTManager()
mail = Mail()
task_queue = TaskQueue()
