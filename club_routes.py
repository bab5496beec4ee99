# club_routes.py - Book clubs and forums
from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

import clubs
from error_handling import json_body

book_clubs_bp = Blueprint('book_clubs', __name__, url_prefix='/api/book-clubs')
forums_bp = Blueprint('forums', __name__, url_prefix='/api/forums')


@book_clubs_bp.route('', methods=['GET'])
def list_clubs():
    return jsonify(clubs.list_public_clubs())


@book_clubs_bp.route('/<int:club_id>', methods=['GET'])
def get_club(club_id):
    return jsonify(clubs.get_club(club_id))


@book_clubs_bp.route('', methods=['POST'])
@login_required
def create_club():
    club = clubs.create_club(current_user.id, json_body())
    return jsonify({"message": "Book club created successfully", "club": club}), 201


@book_clubs_bp.route('/<int:club_id>/join', methods=['POST'])
@login_required
def join_club(club_id):
    clubs.join_club(club_id, current_user.id)
    return jsonify({"message": "Joined book club successfully"})


@book_clubs_bp.route('/<int:club_id>/leave', methods=['DELETE'])
@login_required
def leave_club(club_id):
    clubs.leave_club(club_id, current_user.id)
    return jsonify({"message": "Left book club successfully"})


@book_clubs_bp.route('/<int:club_id>/current-book', methods=['POST'])
@login_required
def set_current_book(club_id):
    entry = clubs.set_current_book(club_id, current_user.id, json_body())
    return jsonify({"message": "Current book set successfully", "currentBook": entry})


@book_clubs_bp.route('/my/clubs', methods=['GET'])
@login_required
def my_clubs():
    return jsonify(clubs.list_user_clubs(current_user.id))


@forums_bp.route('', methods=['GET'])
def list_forums():
    return jsonify(clubs.list_forums(request.args.get('book_id'), request.args.get('club_id')))


@forums_bp.route('/<int:forum_id>', methods=['GET'])
def get_forum(forum_id):
    return jsonify(clubs.get_forum(forum_id))


@forums_bp.route('', methods=['POST'])
@login_required
def create_forum():
    forum = clubs.create_forum(current_user.id, json_body())
    return jsonify({"message": "Forum created successfully", "forum": forum}), 201


@forums_bp.route('/<int:forum_id>/reply', methods=['POST'])
@login_required
def reply(forum_id):
    created = clubs.add_reply(forum_id, current_user.id, json_body())
    return jsonify({"message": "Reply posted successfully", "reply": created}), 201


@forums_bp.route('/reply/<int:reply_id>/like', methods=['POST'])
@login_required
def like_reply(reply_id):
    likes = clubs.like_reply(reply_id)
    return jsonify({"message": "Reply liked successfully", "likes": likes})


@forums_bp.route('/<int:forum_id>', methods=['DELETE'])
@login_required
def delete_forum(forum_id):
    clubs.delete_forum(forum_id, current_user.id)
    return jsonify({"message": "Forum deleted successfully"})


@forums_bp.route('/reply/<int:reply_id>', methods=['DELETE'])
@login_required
def delete_reply(reply_id):
    clubs.delete_reply(reply_id, current_user.id)
    return jsonify({"message": "Reply deleted successfully"})
