# negotiation_routes.py - Price negotiation endpoints
from flask import Blueprint, jsonify
from flask_login import current_user, login_required

import negotiations
from error_handling import json_body
from rate_limiter import rate_limit

negotiations_bp = Blueprint('negotiations', __name__, url_prefix='/api/negotiations')


@negotiations_bp.route('', methods=['POST'])
@login_required
@rate_limit('marketplace_write')
def make_offer():
    negotiation = negotiations.make_offer(current_user.id, json_body())
    return jsonify({"message": "Offer sent successfully", "negotiation": negotiation}), 201


@negotiations_bp.route('/listing/<int:listing_id>', methods=['GET'])
@login_required
def listing_negotiations(listing_id):
    return jsonify(negotiations.list_for_listing(listing_id, current_user.id))


@negotiations_bp.route('/my-offers', methods=['GET'])
@login_required
def my_offers():
    return jsonify(negotiations.list_sent(current_user.id))


@negotiations_bp.route('/received', methods=['GET'])
@login_required
def received_offers():
    return jsonify(negotiations.list_received(current_user.id))


@negotiations_bp.route('/<int:negotiation_id>/counter', methods=['PUT'])
@login_required
def counter_offer(negotiation_id):
    negotiation = negotiations.counter_offer(negotiation_id, current_user.id, json_body())
    return jsonify({"message": "Counter offer sent", "negotiation": negotiation})


@negotiations_bp.route('/<int:negotiation_id>/accept', methods=['PUT'])
@login_required
def accept_offer(negotiation_id):
    negotiation = negotiations.accept_offer(negotiation_id, current_user.id)
    return jsonify({"message": "Offer accepted", "negotiation": negotiation})


@negotiations_bp.route('/<int:negotiation_id>/reject', methods=['PUT'])
@login_required
def reject_offer(negotiation_id):
    negotiation = negotiations.reject_offer(negotiation_id, current_user.id)
    return jsonify({"message": "Offer rejected", "negotiation": negotiation})
