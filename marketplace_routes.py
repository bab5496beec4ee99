# marketplace_routes.py - Listings, exchange requests and purchases
from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

import marketplace
from error_handling import json_body
from rate_limiter import rate_limit

marketplace_bp = Blueprint('marketplace', __name__, url_prefix='/api/marketplace')


@marketplace_bp.route('/listings', methods=['GET'])
def list_listings():
    """Browse active listings
    ---
    tags:
      - Marketplace
    parameters:
      - name: type
        in: query
        type: string
        enum: [sell, exchange]
      - name: condition
        in: query
        type: string
        enum: [new, like-new, good, fair, poor]
      - name: max_price
        in: query
        type: number
      - name: genre
        in: query
        type: string
        description: Case-insensitive substring of the book's genre
    responses:
      200:
        description: Active listings, newest first
      400:
        description: max_price is not a positive number
    """
    return jsonify(marketplace.list_listings(
        listing_type=request.args.get('type'),
        condition=request.args.get('condition'),
        max_price=request.args.get('max_price'),
        genre=request.args.get('genre'),
    ))


@marketplace_bp.route('/listings/<int:listing_id>', methods=['GET'])
def get_listing(listing_id):
    return jsonify(marketplace.get_listing(listing_id))


@marketplace_bp.route('/my-listings', methods=['GET'])
@login_required
def my_listings():
    return jsonify(marketplace.list_seller_listings(current_user.id))


@marketplace_bp.route('/listings', methods=['POST'])
@login_required
@rate_limit('marketplace_write')
def create_listing():
    """Create a listing for one of your books
    ---
    tags:
      - Marketplace
    security:
      - Bearer: []
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          required: [book_id, listing_type, condition]
          properties:
            book_id:
              type: integer
            listing_type:
              type: string
              enum: [sell, exchange]
            price:
              type: number
              description: Required for sell listings
            condition:
              type: string
              enum: [new, like-new, good, fair, poor]
            description:
              type: string
    responses:
      201:
        description: Listing created
      400:
        description: Missing or invalid fields
      404:
        description: Book not found or does not belong to you
    """
    listing = marketplace.create_listing(current_user.id, json_body())
    return jsonify({"message": "Listing created successfully", "listing": listing}), 201


@marketplace_bp.route('/listings/<int:listing_id>', methods=['PUT'])
@login_required
def update_listing(listing_id):
    listing = marketplace.update_listing(listing_id, current_user.id, json_body())
    return jsonify({"message": "Listing updated successfully", "listing": listing})


@marketplace_bp.route('/listings/<int:listing_id>', methods=['DELETE'])
@login_required
def delete_listing(listing_id):
    marketplace.delete_listing(listing_id, current_user.id)
    return jsonify({"message": "Listing deleted successfully"})


@marketplace_bp.route('/exchange-requests', methods=['POST'])
@login_required
@rate_limit('marketplace_write')
def create_exchange_request():
    exchange_request = marketplace.propose_exchange(current_user.id, json_body())
    return jsonify({"message": "Exchange request sent successfully", "request": exchange_request}), 201


@marketplace_bp.route('/exchange-requests/received', methods=['GET'])
@login_required
def received_exchange_requests():
    return jsonify(marketplace.list_received_exchanges(current_user.id))


@marketplace_bp.route('/exchange-requests/sent', methods=['GET'])
@login_required
def sent_exchange_requests():
    return jsonify(marketplace.list_sent_exchanges(current_user.id))


@marketplace_bp.route('/exchange-requests/<int:request_id>', methods=['PUT'])
@login_required
def respond_to_exchange_request(request_id):
    exchange_request = marketplace.respond_to_exchange(request_id, current_user.id, json_body().get('status'))
    return jsonify({
        "message": f"Exchange request {exchange_request['status']}",
        "request": exchange_request,
    })


@marketplace_bp.route('/transactions', methods=['POST'])
@login_required
@rate_limit('marketplace_write')
def create_transaction():
    """Buy an active sell listing at its current price
    ---
    tags:
      - Marketplace
    security:
      - Bearer: []
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          required: [listing_id]
          properties:
            listing_id:
              type: integer
    responses:
      201:
        description: Purchase recorded and listing marked sold
      400:
        description: Cannot purchase your own listing
      404:
        description: Listing not found or not available
    """
    transaction = marketplace.purchase_listing(current_user.id, json_body())
    return jsonify({"message": "Purchase completed successfully", "transaction": transaction}), 201


@marketplace_bp.route('/transactions/purchases', methods=['GET'])
@login_required
def purchases():
    return jsonify(marketplace.list_purchases(current_user.id))


@marketplace_bp.route('/transactions/sales', methods=['GET'])
@login_required
def sales():
    return jsonify(marketplace.list_sales(current_user.id))
