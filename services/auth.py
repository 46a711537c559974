from collections import namedtuple
from functools import wraps

from flask import g, jsonify
from flask_jwt_extended import get_jwt, verify_jwt_in_request

from extensions import db
from models.company import Company

CurrentUser = namedtuple('CurrentUser', ['user_id', 'company_id'])


def token_required(f):
    """
    Verifies the bearer token and passes the caller's identity to the view.
    Tokens are issued elsewhere; they must carry a ``company_id`` claim.
    """
    @wraps(f)
    def decorated(*args, **kwargs):
        verify_jwt_in_request()
        claims = get_jwt()

        company_id = claims.get('company_id')
        if not company_id:
            return jsonify({'message': 'Token has no company context'}), 401
        if db.session.get(Company, company_id) is None:
            return jsonify({'message': 'Company not found'}), 401

        current_user = CurrentUser(user_id=claims.get('sub'), company_id=company_id)
        g.user_id = current_user.user_id
        g.company_id = current_user.company_id
        return f(current_user, *args, **kwargs)
    return decorated
