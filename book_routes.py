# book_routes.py - Book catalogue endpoints
from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

import catalog
from error_handling import json_body, parse_int

books_bp = Blueprint('books', __name__, url_prefix='/api/books')


@books_bp.route('', methods=['GET'])
def list_books():
    """List books, newest first
    ---
    tags:
      - Books
    parameters:
      - name: genre
        in: query
        type: string
      - name: user_id
        in: query
        type: integer
    responses:
      200:
        description: Array of books
    """
    user_id = parse_int(request.args.get('user_id'), 'user_id', required=False)
    return jsonify(catalog.list_books(genre=request.args.get('genre'), user_id=user_id))


@books_bp.route('/<int:book_id>', methods=['GET'])
def get_book(book_id):
    return jsonify(catalog.get_book(book_id))


@books_bp.route('', methods=['POST'])
@login_required
def create_book():
    book = catalog.create_book(current_user.id, json_body())
    return jsonify(book), 201


@books_bp.route('/<int:book_id>', methods=['PUT'])
@login_required
def update_book(book_id):
    book = catalog.update_book(book_id, current_user.id, json_body())
    return jsonify(book)


@books_bp.route('/<int:book_id>', methods=['DELETE'])
@login_required
def delete_book(book_id):
    catalog.delete_book(book_id, current_user.id)
    return '', 204
